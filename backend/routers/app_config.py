from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import get_db
from config import SELLER_GROUPS
from schemas.app_config import AppConfigCreate, AppConfigUpdate, AppConfigOut
from crud import app_config as crud_app_config
from models.app_config import AppConfig as AppConfigModel
from utils.auth_utils import get_user_identifier, require_group

router = APIRouter(tags=["Configurations"])
logger = logging.getLogger("app_config")

@router.post("/configurations/", response_model=AppConfigOut)
def create_config(config: AppConfigCreate, db: Session = Depends(get_db), user: dict = Depends(require_group(SELLER_GROUPS))):
    if crud_app_config.get_config(db, name=config.name):
        raise HTTPException(status_code=400, detail=f"Configuration {config.name} already exists")
    try:
        return crud_app_config.create_config(db, config, user_id=get_user_identifier(user))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/configurations/", response_model=List[AppConfigOut])
def get_configs(name: Optional[str] = None, db: Session = Depends(get_db)):
    configs = crud_app_config.get_config(db, name=name)
    # Always return a list, even if empty
    if name:
        return [configs] if configs else []
    return configs

@router.patch("/configurations/{name}/", response_model=AppConfigOut)
def update_config(name: str, config: AppConfigUpdate, db: Session = Depends(get_db), user: dict = Depends(require_group(SELLER_GROUPS))):
    try:
        updated = crud_app_config.update_config_by_name(db, name.strip().upper(), config, user_id=get_user_identifier(user))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail="Configuration not found")
    logger.info(f"Configuration {name} set to {updated.value} by {get_user_identifier(user)}")
    return updated


DEFAULT_CONFIGS = [
    {"name": "TAX_RATE", "value": "0.085"},
    {"name": "QUOTATION_VALIDITY_DAYS", "value": "30"},
    {"name": "INVOICE_DUE_DAYS", "value": "30"},
    {"name": "ALLOW_BACKORDER", "value": "false"},
    {"name": "RESERVATION_LOCK_TIMEOUT_MS", "value": "5000"},
    {"name": "RESERVATION_MAX_RETRIES", "value": "3"},
    {"name": "RESERVATION_RETRY_BACKOFF_SECONDS", "value": "0.2"},
]

@router.get("/configurations/initialized")
def are_configurations_initialized(db: Session = Depends(get_db)):
    """
    Checks if the default quotation settings have rows in app_config.
    """
    default_config_names = {config["name"] for config in DEFAULT_CONFIGS}
    existing_config_names = {
        name for (name,) in db.query(AppConfigModel.name).filter(AppConfigModel.name.in_(default_config_names))
    }
    return {"configs_initialized": default_config_names.issubset(existing_config_names)}


@router.post("/configurations/initialize", status_code=status.HTTP_201_CREATED)
def initialize_configurations(db: Session = Depends(get_db), user: dict = Depends(require_group(SELLER_GROUPS))):
    """
    Seeds app_config with the default quotation settings.
    This is idempotent; it will not overwrite existing configurations.
    """
    existing_config_names = {name for (name,) in db.query(AppConfigModel.name)}

    new_configs_created = []
    for config_data in DEFAULT_CONFIGS:
        if config_data["name"] not in existing_config_names:
            crud_app_config.create_config(db, AppConfigCreate(**config_data), user_id=get_user_identifier(user))
            new_configs_created.append(config_data["name"])

    if not new_configs_created:
        return {"message": "All default configurations already exist."}

    logger.info(f"Initialized default configs by user {get_user_identifier(user)}. New configs: {new_configs_created}")
    return {"message": "Successfully initialized default configurations.", "new_configs": new_configs_created}
