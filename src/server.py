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

from fastapi import FastAPI
from .handlers import http
from .cloudconfig.manager import CloudConfigManager
from .cloudconfig.store.factory import DocumentStoreFactory
from .cloudconfig.config import ServiceConfig
from contextlib import asynccontextmanager
import logging

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # --- Startup ---
    # 1. Load service config from environment
    config = ServiceConfig.from_env()

    # 2. Create the document store for the configured backend
    store = DocumentStoreFactory(config).create_store()
    logging.info(f"Cloud config store: {config.store} ({type(store).__name__}).")

    # 3. Create the manager and inject it into the handler module
    manager = CloudConfigManager(store=store, config=config)
    http.manager = manager

    yield

    # --- Shutdown ---
    await manager.shutdown()

app = FastAPI(lifespan=lifespan)

app.include_router(http.router)

@app.get("/")
def read_root():
    return {"message": "Server is running"}
