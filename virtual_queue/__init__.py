"""Virtual queue engine for walk-in businesses (MQTT-based).

Customers join a business's queue, the business approves them, starts and
completes service, and everyone watching the business sees the same ordering:
- `controller` owns every state transition and recomputes positions/waits
- `notifications` sends SMS-style updates to customers
- `broadcaster` pushes live snapshots to observers
- `service` exposes it all over MQTT request/response

See README for how to run.
"""
