"""Desktop launcher for DailyFlow."""

from dailyflow_app.ui_main import run_app


if __name__ == "__main__":
    run_app()
