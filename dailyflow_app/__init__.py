"""PyQt5 desktop front end for DailyFlow."""
