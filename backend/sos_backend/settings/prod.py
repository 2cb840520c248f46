from .base import *  # noqa: F401,F403
import os

DEBUG = False
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(',')

# Customer and operator apps are served from known origins only
CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(',')

SESSION_COOKIE_SECURE = env_bool("SESSION_COOKIE_SECURE", True)
CSRF_COOKIE_SECURE = env_bool("CSRF_COOKIE_SECURE", True)

# Events must reach sockets held by every ASGI worker
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}/0")],
        },
    }
}

# Run the dispatch loop in one dedicated process (run_dispatch_scheduler or
# the celery dispatch task) rather than inside every web worker
ENABLE_DISPATCH_SCHEDULER = env_bool("ENABLE_DISPATCH_SCHEDULER", False)
