from prometheus_client import Counter, Histogram


HTTP_REQUESTS_TOTAL = Counter(
    "storefront_http_requests_total",
    "Total HTTP requests",
    ["service", "method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "storefront_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["service", "method", "path"],
)

AUTH_TOKEN_VALIDATION_TOTAL = Counter(
    "storefront_auth_token_validation_total",
    "Authentication token validation events",
    ["service", "result"],
)

PERMISSION_CHECK_TOTAL = Counter(
    "storefront_permission_check_total",
    "Permission check events",
    ["service", "permission", "result"],
)

ORDERS_API_REQUESTS_TOTAL = Counter(
    "storefront_orders_api_requests_total",
    "Orders API request events",
    ["service", "endpoint", "method", "status"],
)

ORDERS_SERVICE_OPERATIONS_TOTAL = Counter(
    "storefront_orders_service_operations_total",
    "Order service operations",
    ["service", "operation", "status"],
)

ORDER_VALIDATION_TOTAL = Counter(
    "storefront_order_validation_total",
    "Order creation request validation results",
    ["service", "result"],
)

ORDER_TRANSITIONS_TOTAL = Counter(
    "storefront_order_transitions_total",
    "Order status transition decisions",
    ["service", "actor", "decision"],
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "storefront_webhook_events_total",
    "Inbound webhook notifications",
    ["service", "channel", "result"],
)

PROVIDER_REQUESTS_TOTAL = Counter(
    "storefront_provider_requests_total",
    "Outbound requests to payment and carrier providers",
    ["service", "provider", "operation", "status"],
)

FULFILLMENT_HANDOFF_TOTAL = Counter(
    "storefront_fulfillment_handoff_total",
    "Fulfillment handoff attempts after payment confirmation",
    ["service", "result"],
)

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "storefront_rate_limit_decisions_total",
    "Rate limiter decisions",
    ["service", "scope", "result"],
)

KAFKA_PRODUCER_MESSAGES_TOTAL = Counter(
    "storefront_kafka_producer_messages_total",
    "Kafka producer send events",
    ["service", "result"],
)

ORDER_TOTAL_MINOR_UNITS = Histogram(
    "storefront_order_total_minor_units",
    "Grand total of created orders in minor units",
    ["service", "country"],
    buckets=(1000, 2500, 5000, 10000, 25000, 50000, 100000, 250000),
)
