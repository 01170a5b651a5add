# contract_ocr/routes/rois.py
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from contract_ocr.models.roi import ROIConfig, load_roi_config
from contract_ocr.routes.deps import Services, get_services

router = APIRouter(prefix="/rois", tags=["ROI"])


@router.get("", response_model=ROIConfig)
def get_rois(services: Services = Depends(get_services)):
    return services.store.get_rois()


@router.put("", response_model=ROIConfig)
def update_rois(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    # validated here so a bad region is rejected before it is stored
    config = load_roi_config(payload)
    services.store.update_rois(config)
    return config
