from typing import List, Optional, Union

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from markov_service.config import settings
from markov_service.services.errors import GenerationError
from markov_service.services.markov import MarkovModel, train_from_corpus
from markov_service.services.randgen import SeededRandom
from markov_service.utils.logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter()

# In-memory model cache (CPU-friendly)
MODEL_CACHE = {}


class TrainRequest(BaseModel):
    corpus: Union[str, List[str]]
    order: int = Field(default_factory=lambda: settings.MARKOV_DEFAULT_ORDER)
    model_name: str = "default"
    multiplier: int = 1
    max_length_match: Optional[int] = None
    disable_input_checks: bool = False
    seed: Optional[int] = None


class GenerateRequest(BaseModel):
    model_name: str = "default"
    count: Optional[int] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    temperature: Optional[float] = None
    allow_duplicates: bool = False
    seed: Optional[Union[str, List[str]]] = None
    disable_input_checks: Optional[bool] = None


class ProbabilitiesRequest(BaseModel):
    model_name: str = "default"
    prefix: Union[str, List[str]] = ""
    temperature: Optional[float] = None


class CompletionsRequest(BaseModel):
    model_name: str = "default"
    pre: Union[str, List[str]]
    post: Optional[Union[str, List[str]]] = None


class ImportRequest(BaseModel):
    model_name: str = "default"
    data: str


def _get_model(name: str) -> MarkovModel:
    model = MODEL_CACHE.get(name)
    if model is None:
        raise HTTPException(status_code=404, detail="model not found, train first")
    return model


@router.post("/train")
async def train(req: TrainRequest):
    if not req.corpus:
        raise HTTPException(status_code=400, detail="corpus is empty")
    try:
        model = train_from_corpus(
            req.corpus,
            req.order,
            multiplier=req.multiplier,
            max_length_match=req.max_length_match,
            disable_input_checks=req.disable_input_checks,
            rng=SeededRandom(req.seed if req.seed is not None else settings.MARKOV_RANDOM_SEED),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    MODEL_CACHE[req.model_name] = model
    logger.info(f"[Markov] Trained '{req.model_name}' order={model.order} size={model.size()}")
    return {"ok": True, "model": req.model_name, "order": model.order, "size": model.size()}


@router.post("/generate")
async def generate(req: GenerateRequest):
    model = _get_model(req.model_name)
    try:
        result = model.generate(
            req.count,
            min_length=req.min_length,
            max_length=req.max_length,
            temperature=req.temperature,
            allow_duplicates=req.allow_duplicates,
            seed=req.seed,
            disable_input_checks=req.disable_input_checks,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationError as e:
        logger.warning(f"[Markov] Generation failed for '{req.model_name}': {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if isinstance(result, list):
        return {"ok": True, "data": {"sentences": result}}
    return {"ok": True, "data": {"text": result}}


@router.post("/probabilities")
async def probabilities(req: ProbabilitiesRequest):
    model = _get_model(req.model_name)
    try:
        probs = model.probabilities(req.prefix, req.temperature)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "data": probs}


@router.post("/completions")
async def completions(req: CompletionsRequest):
    model = _get_model(req.model_name)
    try:
        result = model.completions(req.pre, req.post)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "data": result}


@router.get("/{model_name}/export")
async def export_model(model_name: str):
    model = _get_model(model_name)
    return Response(content=model.to_json(), media_type="application/json")


@router.post("/import")
async def import_model(req: ImportRequest):
    try:
        model = MarkovModel.from_json(req.data)
    except (ValueError, KeyError, AttributeError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"invalid model data: {e}")
    MODEL_CACHE[req.model_name] = model
    return {"ok": True, "model": req.model_name, "order": model.order, "size": model.size()}
