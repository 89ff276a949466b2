"""JSON HTTP API over portfolios, holdings, transactions and performance reports."""

from .app import create_app
