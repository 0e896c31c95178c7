import uvicorn

from safescan.main import app

if __name__ == "__main__":
    uvicorn.run("safescan.main:app", host="0.0.0.0", port=8000, reload=False)
