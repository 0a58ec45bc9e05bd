"""Run the API with uvicorn: python -m dolibarr_ocr"""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "dolibarr_ocr.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )


if __name__ == "__main__":
    main()
