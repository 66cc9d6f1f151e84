# storefront/obs/metrics.py
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 下单链路（每次成功提交事务 +1；Grafana 用 rate() 看吞吐）
orders_placed_total = Counter("storefront_orders_placed_total", "Orders placed")
preview_conflicts_total = Counter(
    "storefront_preview_conflicts_total", "Client previews rejected by reconciliation"
)
lines_unavailable_total = Counter(
    "storefront_lines_unavailable_total", "Order lines rejected as unavailable", ["stage"]
)
order_transitions_total = Counter(
    "storefront_order_transitions_total", "Order status transitions", ["to_status", "performed_by"]
)

# 定时任务
auto_confirm_promoted_total = Counter(
    "storefront_auto_confirm_promoted_total", "Orders promoted by the auto-confirm sweep"
)
auto_confirm_failures_total = Counter(
    "storefront_auto_confirm_failures_total", "Orders the auto-confirm sweep failed to promote"
)
outbox_dispatched_total = Counter(
    "storefront_outbox_dispatched_total", "Outbox events dispatched", ["result"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # 用路由模板做 label，避免 /orders/123 这类高基数路径
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response
