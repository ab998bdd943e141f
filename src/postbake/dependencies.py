"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from postbake.config import Settings, get_settings
from postbake.models.db import get_db_session
from postbake.services.onebox import OneboxRenderer, get_onebox_renderer
from postbake.services.probe import HttpSizeProber, get_size_prober

# Type aliases for dependencies
SettingsDep = Annotated[Settings, Depends(get_settings)]
SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
SizeProberDep = Annotated[HttpSizeProber, Depends(get_size_prober)]
OneboxRendererDep = Annotated[OneboxRenderer, Depends(get_onebox_renderer)]
