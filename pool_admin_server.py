from dotenv import load_dotenv
from fastapi import FastAPI

from pooladmin.config import dlog, load_settings
from pooladmin.pool import CredentialPool
from pooladmin.service import AdminService
from pooladmin.usage_client import UsageLimitsClient
from pooladmin.webui.assets import AssetTable, create_admin_ui_router
from pooladmin.webui.auth import load_admin_auth_config
from pooladmin.webui.routes import create_admin_api_router
from pooladmin.webui.state import init_admin_state


load_dotenv()
settings = load_settings()
app = FastAPI()

usage_client = UsageLimitsClient(url=settings.usage_api_url, timeout=settings.usage_api_timeout)
pool = CredentialPool(path=settings.credentials_file, usage_client=usage_client)
pool.load()
admin_service = AdminService(pool)

# Admin API only when explicitly enabled and configured.
_admin_config = load_admin_auth_config()
if _admin_config.enabled:
    _admin_state = init_admin_state(_admin_config, admin_service, settings.event_log_path)
    app.include_router(create_admin_api_router(_admin_config, _admin_state, prefix=settings.api_prefix))
else:
    if _admin_config.disabled_reason:
        dlog("admin_disabled", _admin_config.disabled_reason)

# The UI bundle is public; it reads everything through the admin API.
assets = AssetTable.from_directory(settings.admin_ui_dist)
app.include_router(create_admin_ui_router(settings.base_path, assets, prefix=settings.ui_prefix))


if __name__ == "__main__":
    # Convenience for local runs: python pool_admin_server.py --pool-admin-debug
    import os

    import uvicorn

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "18080"))
    uvicorn.run("pool_admin_server:app", host=host, port=port, reload=False)
