"""Tests for the application entry points."""

from unittest.mock import patch

from postbake.config import Settings
from postbake.main import run


def test_run_serves_app_with_uvicorn():
    """Test that the console script hands the app to uvicorn."""
    settings = Settings(_env_file=None, host="0.0.0.0", port=9000, debug=True)

    with patch("postbake.main.get_settings", return_value=settings), patch("uvicorn.run") as mock_run:
        run()

    mock_run.assert_called_once_with("postbake.main:app", host="0.0.0.0", port=9000, reload=True)
