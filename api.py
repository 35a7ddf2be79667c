"""Subscription billing API entrypoint"""

import uvicorn
from config import ApplicationConfig
from src.api.app import create_app

app = create_app(ApplicationConfig)

if __name__ == "__main__":
    uvicorn.run(
        "api:app",
        host=ApplicationConfig.API_HOST,
        port=ApplicationConfig.API_PORT,
        # Rate limiting keys on the client IP forwarded by the load balancer
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level=str(ApplicationConfig.LOG_LEVEL).lower(),
    )
