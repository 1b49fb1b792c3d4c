"""
                        Services Module

Business logic behind the HTTP and socket endpoints.

Services:
    - orders: order store and lifecycle engine
    - notifications: durable inbox and fan-out dispatcher
    - realtime: room-based live channel (in-process or Redis)
    - auth: session/identity provider
"""
