import os

import uvicorn

from storefront_audit.observability import configure_logging


if __name__ == "__main__":
    configure_logging(os.environ.get("AUDIT_LOG_LEVEL", "INFO"))

    print("Starting Storefront Audit API Server...")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "storefront_audit.api.server:app",
        host=os.environ.get("AUDIT_HOST", "0.0.0.0"),
        port=int(os.environ.get("AUDIT_PORT", "8000")),
        reload=os.environ.get("AUDIT_RELOAD", "").lower() in ("1", "true"),
    )
