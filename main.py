import os

from app.main import app

if __name__ == "__main__":
    # Importing app.main prepares the data directories and the SQLite schema.
    # PORT comes from the hosting environment; 8080 locally.
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, threaded=True)
