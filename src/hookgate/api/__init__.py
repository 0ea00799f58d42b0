"""FastAPI REST API for Hookgate.

Example:
    ```python
    import uvicorn
    from hookgate.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn hookgate.api:create_app --factory --reload
    ```
"""

from .app import create_app
from .router import router

__all__ = [
    "create_app",
    "router",
]
