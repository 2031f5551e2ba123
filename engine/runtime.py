import os
import sys

import boto3
import requests
from yt_dlp.version import __version__ as ytdlp_version


def get_runtime_info():
    """Versions reported by the API for support requests."""
    return {
        "app_version": os.environ.get("PREVIEWR_VERSION", "0.0.0"),
        "python_version": sys.version.split()[0],
        "yt_dlp_version": ytdlp_version,
        "boto3_version": boto3.__version__,
        "requests_version": requests.__version__,
    }
