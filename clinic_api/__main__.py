"""Run the clinic API with uvicorn.

Usage: python -m clinic_api
"""
import os

import uvicorn


def main():
    uvicorn.run(
        "clinic_api.api_server:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5000")),
    )


if __name__ == "__main__":
    main()
