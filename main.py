from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional

from config import ENABLE_BROWSER, LOG_LEVEL
from garment_classifier import GarmentClassifier
from image_fetcher import ImageFetchError, fetch_image
from scrape_orchestrator import scrape_page_images
from static_extractor import fetch_page_html, pick_primary_image
from url_rules import InvalidPageUrl, normalize_page_url

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Product Image Extractor API",
    description="Finds product images on e-commerce pages and fetches the one you pick",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Client errors are rendered as {"error": "..."}
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


# Request models
class PageImagesRequest(BaseModel):
    pageUrl: Optional[str] = None
    url: Optional[str] = None  # legacy field name

class FetchImageRequest(BaseModel):
    imageUrl: Optional[str] = None
    referer: Optional[str] = None

class ScrapeImageRequest(BaseModel):
    url: Optional[str] = None

class DetectClothingRequest(BaseModel):
    image: Optional[str] = None


@app.get("/")
async def root():
    return {"message": "Product Image Extractor API is running"}

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "browser_enabled": ENABLE_BROWSER}

@app.post("/fetch-page-images")
async def fetch_page_images(request: PageImagesRequest):
    """
    List candidate product images found on a page

    Extraction problems never produce an error status: an empty list means
    nothing usable was found. Only a missing or unparseable URL is a 400.
    """
    raw_url = request.pageUrl or request.url
    if not raw_url:
        raise HTTPException(status_code=400, detail="URL is required")

    try:
        result = await scrape_page_images(raw_url, use_browser=ENABLE_BROWSER)
    except InvalidPageUrl as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error fetching page images for {raw_url}: {e}")
        return {"images": [], "totalFound": 0}

    return {"images": result.images, "totalFound": result.total_found}

@app.post("/fetch-image")
async def fetch_single_image(request: FetchImageRequest):
    """
    Fetch one chosen image and return it inline as a data URI

    Returns:
        JSON with payload (data URI), contentType and byteSize
    """
    if not request.imageUrl:
        raise HTTPException(status_code=400, detail="Image URL is required")

    try:
        image = await fetch_image(request.imageUrl, referer=request.referer)
    except ImageFetchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error fetching image {request.imageUrl}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch image")

    return {
        "payload": image.payload,
        "contentType": image.content_type,
        "byteSize": image.byte_size,
    }

@app.post("/scrape-image")
async def scrape_primary_image(request: ScrapeImageRequest):
    """
    Pick the single most likely product image on a page and try to inline it
    """
    if not request.url:
        raise HTTPException(status_code=400, detail="URL is required")

    try:
        page_url = normalize_page_url(request.url)
    except InvalidPageUrl as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Scraping product image from: {page_url}")
    html = await fetch_page_html(page_url)
    if html is None:
        raise HTTPException(status_code=502, detail="Failed to fetch page")

    image_url = pick_primary_image(html, page_url)
    if not image_url:
        raise HTTPException(status_code=404, detail="Could not find product image on this page")

    try:
        image = await fetch_image(image_url, referer=page_url)
    except ImageFetchError as e:
        logger.warning(f"Found {image_url} but could not fetch it: {e}")
        return {
            "imageUrl": image_url,
            "message": "Found image URL but could not fetch it directly. Use the URL in the cloth image field.",
        }

    return {
        "imageUrl": image_url,
        "base64Image": image.payload,
        "message": "Successfully extracted product image!",
    }

@app.post("/detect-clothing")
async def detect_clothing(request: DetectClothingRequest):
    """
    Classify a garment image into a try-on category

    Falls back to the default category when the classifier is unavailable.
    """
    if not request.image:
        raise HTTPException(status_code=400, detail="Image is required")

    result = await GarmentClassifier().classify(request.image)
    response = {
        "category": result.category,
        "itemType": result.item_type,
        "rawDetection": result.raw_detection,
        "message": f"Detected: {result.item_type}",
    }
    if result.error_message:
        response["fallback"] = True
    return response

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
