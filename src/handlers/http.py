# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from fastapi import APIRouter, HTTPException, Body
from typing import Annotated, Any, Dict, Optional
from src.cloudconfig.manager import CloudConfigManager
from src.cloudconfig.lock.interface import InvalidArgumentError, LockNotHeldError, LockTimeoutError
from src.cloudconfig.store.interface import DocumentNotFoundError, UnauthorizedError, UpstreamFailureError
import logging

logger = logging.getLogger(__name__)

# This will be replaced by the configured manager instance at startup
manager: Optional[CloudConfigManager] = None


def to_http_exception(e: Exception) -> HTTPException:
    """Maps lock and store errors onto HTTP status codes."""
    if isinstance(e, InvalidArgumentError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, LockNotHeldError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LockTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UnauthorizedError):
        return HTTPException(status_code=502, detail=f"Director authorization failed: {e}")
    if isinstance(e, UpstreamFailureError):
        return HTTPException(status_code=502, detail=str(e))
    logger.exception("Unexpected error handling cloud config request")
    return HTTPException(status_code=500, detail=f"Server error: {e}")

# ==============================================================================
# FastAPI Route Handlers
# ==============================================================================

router = APIRouter()

@router.get("/status")
async def get_status():
    return {"status": "ok"}

@router.get("/locks")
async def list_locks():
    """Lists the state of every cloud config lock seen by this process."""
    return {"locks": manager.lock_status()}

@router.get("/directors/{director_name}/cloud-configs/{config_name}")
async def get_cloud_config(director_name: str, config_name: str):
    """Returns the latest version of a cloud config."""
    try:
        content = await manager.get_cloud_config(director_name, config_name)
    except Exception as e:
        raise to_http_exception(e)
    if content is None:
        raise HTTPException(status_code=404, detail=f"Cloud config {director_name}_{config_name} not found")
    return {"content": content}

@router.post("/directors/{director_name}/cloud-configs/{config_name}/merge")
async def merge_cloud_config(
    director_name: str,
    config_name: str,
    patch: Annotated[Dict[str, Any], Body()],
):
    """
    Merges the top-level keys of the request body into the cloud config.
    Concurrent merges against the same cloud config are applied one at a time.
    """
    try:
        content = await manager.merge_cloud_config(director_name, config_name, patch)
    except Exception as e:
        raise to_http_exception(e)
    return {"content": content}
