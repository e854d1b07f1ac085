import logging
import time
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .config import get_settings
from .llm_service import GenerationStream, LLMService
from .models import CaptureRequest, CaptureResult, GenerateRequest, IterateRequest
from .scraper import CaptureError, WebsiteScraper, is_valid_url
from .sse import SSE_HEADERS, format_event

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Site Prototyper API", version="1.0.0")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Missing, empty or non-JSON bodies answer like a body with missing fields
MISSING_FIELD_MESSAGES = {
    "/capture": "URL is required",
    "/generate": "Screenshot and prompt are required",
    "/iterate": "Current HTML and instruction are required",
}


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = MISSING_FIELD_MESSAGES.get(request.url.path, "Invalid request body")
    logger.warning(f"[{request.url.path.strip('/')}] Rejected request body: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": message})


def get_llm_service(request: Request) -> Optional[LLMService]:
    """One model client per app, built on first use. None when it cannot be configured."""
    service = getattr(request.app.state, "llm_service", None)
    if service is None:
        try:
            service = LLMService.from_settings(get_settings())
        except ValueError as e:
            logger.error(f"Model client unavailable: {e}")
            return None
        request.app.state.llm_service = service
    return service


def get_scraper() -> WebsiteScraper:
    return WebsiteScraper(get_settings())


async def _event_stream(stream: GenerationStream) -> AsyncIterator[str]:
    async for event in stream.events():
        yield format_event(event)


@app.get("/")
def read_root():
    return {"message": "Site Prototyper API", "version": "1.0.0"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.post("/capture", response_model=CaptureResult)
async def capture_page(request: CaptureRequest, scraper: WebsiteScraper = Depends(get_scraper)):
    """
    Capture a screenshot and sanitized HTML sample of a public page
    """
    url = (request.url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required")
    if not is_valid_url(url):
        raise HTTPException(status_code=400, detail="Invalid URL. Please enter a valid http or https URL.")

    start = time.monotonic()
    try:
        return await scraper.capture(url)
    except CaptureError as e:
        logger.error(f"[capture] Failed for {url} after {int((time.monotonic() - start) * 1000)}ms: {e}")
        raise HTTPException(status_code=500, detail="Failed to capture the URL. Please try again.")


@app.post("/generate")
async def generate_prototype(request: GenerateRequest, llm: Optional[LLMService] = Depends(get_llm_service)):
    """
    Stream a prototype generated from a captured screenshot, HTML sample and user goal
    """
    logger.info(
        f"[generate] Payload: screenshot={len(request.screenshot or '')} chars, "
        f"html={len(request.html or '')} chars, url={request.url or '-'}, "
        f"prompt={(request.prompt or '')[:100]!r}"
    )
    if not request.screenshot or not request.prompt:
        logger.warning("[generate] Missing required fields")
        raise HTTPException(status_code=400, detail="Screenshot and prompt are required")

    try:
        if llm is None:
            raise RuntimeError("model client is not configured")
        stream = await llm.open_generation(request)
    except Exception as e:
        logger.error(f"[generate] Failed to open stream: {e}")
        raise HTTPException(status_code=500, detail="Failed to start generation")

    return StreamingResponse(_event_stream(stream), media_type="text/event-stream", headers=SSE_HEADERS)


@app.post("/iterate")
async def iterate_prototype(request: IterateRequest, llm: Optional[LLMService] = Depends(get_llm_service)):
    """
    Stream a revised prototype from the current HTML and a change instruction
    """
    logger.info(
        f"[iterate] Payload: html={len(request.current_html or '')} chars, "
        f"instruction={(request.instruction or '')[:100]!r}"
    )
    if not request.current_html or not request.instruction:
        logger.warning("[iterate] Missing required fields")
        raise HTTPException(status_code=400, detail="Current HTML and instruction are required")

    try:
        if llm is None:
            raise RuntimeError("model client is not configured")
        stream = await llm.open_iteration(request)
    except Exception as e:
        logger.error(f"[iterate] Failed to open stream: {e}")
        raise HTTPException(status_code=500, detail="Failed to start iteration")

    return StreamingResponse(_event_stream(stream), media_type="text/event-stream", headers=SSE_HEADERS)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
