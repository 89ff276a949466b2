"""Flask application factory for the folioperf JSON API."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from flask import Flask, request

from ..config import Settings, create_pricing_manager, load_settings
from ..history import ReportCancelledError, to_utc_date
from ..ledger import OversellError
from ..performance import get_portfolio_performance, report_to_dict
from ..portfolio import Holding, HoldingKind, Portfolio, Transaction, TransactionType
from ..pricingdata import PricingDataManager
from ..repository import InMemoryPortfolioRepository


def _portfolio_to_dict(portfolio: Portfolio) -> dict:
    return {
        "id": portfolio.portfolio_id,
        "name": portfolio.name,
        "created_datetime": portfolio.created_datetime.isoformat(),
    }


def _holding_to_dict(holding: Holding) -> dict:
    return {
        "id": holding.holding_id,
        "portfolio_id": holding.portfolio_id,
        "symbol": holding.symbol,
        "name": holding.name,
        "kind": holding.kind.value,
    }


def _transaction_to_dict(txn: Transaction) -> dict:
    return {
        "id": txn.transaction_id,
        "holding_id": txn.holding_id,
        "datetime": txn.transaction_datetime.isoformat(),
        "transaction_type": txn.transaction_type.value,
        "quantity": str(txn.quantity),
        "price": str(txn.price),
    }


def _parse_query_date(value: str | None) -> date | None:
    """Parse an optional ``YYYY-MM-DD`` or ISO datetime query value into a UTC day."""
    if value is None or value == "":
        return None
    if "T" in value:
        return to_utc_date(datetime.fromisoformat(value))
    return date.fromisoformat(value)


def _require_fields(data: dict | None, required: list[str]) -> str | None:
    """Return an error message for the first missing field, or None."""
    if not isinstance(data, dict):
        return "Request body must be a JSON object"
    for field in required:
        if field not in data or data[field] in (None, ""):
            return f"Missing field: {field}"
    return None


def create_app(
    repository: InMemoryPortfolioRepository | None = None,
    pricing_manager: PricingDataManager | None = None,
    settings: Settings | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        repository: Repository serving portfolios, holdings and transactions.
            A new empty in-memory repository is used when omitted.
        pricing_manager: Source of current prices. Built from ``settings``
            when omitted.
        settings: Engine settings. Loaded from the environment when omitted.

    Returns:
        Configured Flask application instance with all routes registered.
    """
    app = Flask(__name__)

    if settings is None:
        settings = load_settings()
    if repository is None:
        repository = InMemoryPortfolioRepository()
    if pricing_manager is None:
        pricing_manager = create_pricing_manager(settings)

    # ── Portfolios ───────────────────────────────────────

    @app.route("/api/portfolios")
    def list_portfolios():
        return {"portfolios": [_portfolio_to_dict(p) for p in repository.list_portfolios()]}

    @app.route("/api/portfolios", methods=["POST"])
    def create_portfolio():
        data = request.get_json(silent=True)
        error = _require_fields(data, ["name"])
        if error:
            return {"error": error}, 400

        portfolio = repository.add_portfolio(str(data["name"]).strip())
        return _portfolio_to_dict(portfolio), 201

    @app.route("/api/portfolios/<portfolio_id>")
    def get_portfolio(portfolio_id: str):
        portfolio = repository.get_portfolio(portfolio_id)
        if portfolio is None:
            return {"error": f"Portfolio {portfolio_id} not found"}, 404

        result = _portfolio_to_dict(portfolio)
        result["holdings"] = [_holding_to_dict(h) for h in repository.list_holdings(portfolio_id)]
        return result

    @app.route("/api/portfolios/<portfolio_id>", methods=["PUT"])
    def update_portfolio(portfolio_id: str):
        data = request.get_json(silent=True)
        error = _require_fields(data, ["name"])
        if error:
            return {"error": error}, 400

        portfolio = repository.rename_portfolio(portfolio_id, str(data["name"]).strip())
        if portfolio is None:
            return {"error": f"Portfolio {portfolio_id} not found"}, 404
        return _portfolio_to_dict(portfolio)

    @app.route("/api/portfolios/<portfolio_id>", methods=["DELETE"])
    def delete_portfolio(portfolio_id: str):
        if not repository.delete_portfolio(portfolio_id):
            return {"error": f"Portfolio {portfolio_id} not found"}, 404
        return "", 204

    # ── Holdings ─────────────────────────────────────────

    @app.route("/api/portfolios/<portfolio_id>/holdings")
    def list_holdings(portfolio_id: str):
        if repository.get_portfolio(portfolio_id) is None:
            return {"error": f"Portfolio {portfolio_id} not found"}, 404
        return {"holdings": [_holding_to_dict(h) for h in repository.list_holdings(portfolio_id)]}

    @app.route("/api/portfolios/<portfolio_id>/holdings", methods=["POST"])
    def add_holding(portfolio_id: str):
        data = request.get_json(silent=True)
        error = _require_fields(data, ["symbol"])
        if error:
            return {"error": error}, 400

        try:
            kind = HoldingKind(data.get("kind") or HoldingKind.STOCK.value)
        except ValueError as e:
            return {"error": f"Invalid value: {e}"}, 400

        holding = repository.add_holding(
            portfolio_id,
            symbol=str(data["symbol"]).upper().strip(),
            name=str(data.get("name") or ""),
            kind=kind,
        )
        if holding is None:
            return {"error": f"Portfolio {portfolio_id} not found"}, 404
        return _holding_to_dict(holding), 201

    @app.route("/api/portfolios/<portfolio_id>/holdings/<holding_id>")
    def get_holding(portfolio_id: str, holding_id: str):
        holding = repository.get_holding(portfolio_id, holding_id)
        if holding is None:
            return {"error": f"Holding {holding_id} not found in portfolio {portfolio_id}"}, 404

        result = _holding_to_dict(holding)
        result["transactions"] = [
            _transaction_to_dict(t)
            for t in repository.list_holding_transactions(portfolio_id, holding_id)
        ]
        return result

    @app.route("/api/portfolios/<portfolio_id>/holdings/<holding_id>", methods=["PUT"])
    def update_holding(portfolio_id: str, holding_id: str):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return {"error": "Request body must be a JSON object"}, 400

        try:
            kind = HoldingKind(data["kind"]) if data.get("kind") else None
        except ValueError as e:
            return {"error": f"Invalid value: {e}"}, 400

        holding = repository.update_holding(
            portfolio_id,
            holding_id,
            symbol=str(data["symbol"]).upper().strip() if data.get("symbol") else None,
            name=data.get("name"),
            kind=kind,
        )
        if holding is None:
            return {"error": f"Holding {holding_id} not found in portfolio {portfolio_id}"}, 404
        return _holding_to_dict(holding)

    @app.route("/api/portfolios/<portfolio_id>/holdings/<holding_id>", methods=["DELETE"])
    def delete_holding(portfolio_id: str, holding_id: str):
        if not repository.delete_holding(portfolio_id, holding_id):
            return {"error": f"Holding {holding_id} not found in portfolio {portfolio_id}"}, 404
        return "", 204

    # ── Transactions ─────────────────────────────────────

    @app.route("/api/portfolios/<portfolio_id>/holdings/<holding_id>/transactions")
    def list_transactions(portfolio_id: str, holding_id: str):
        if repository.get_holding(portfolio_id, holding_id) is None:
            return {"error": f"Holding {holding_id} not found in portfolio {portfolio_id}"}, 404
        return {
            "transactions": [
                _transaction_to_dict(t)
                for t in repository.list_holding_transactions(portfolio_id, holding_id)
            ],
            "transaction_types": [t.value for t in TransactionType],
        }

    @app.route("/api/portfolios/<portfolio_id>/holdings/<holding_id>/transactions", methods=["POST"])
    def add_transaction(portfolio_id: str, holding_id: str):
        data = request.get_json(silent=True)
        error = _require_fields(data, ["datetime", "transaction_type", "quantity", "price"])
        if error:
            return {"error": error}, 400

        try:
            txn_dt = datetime.fromisoformat(data["datetime"])
            txn_type = TransactionType(str(data["transaction_type"]).upper())
            quantity = Decimal(str(data["quantity"]))
            price = Decimal(str(data["price"]))
            transaction = repository.add_transaction(
                portfolio_id, holding_id, txn_dt, txn_type, quantity, price
            )
        except (ValueError, InvalidOperation) as e:
            return {"error": f"Invalid value: {e}"}, 400

        if transaction is None:
            return {"error": f"Holding {holding_id} not found in portfolio {portfolio_id}"}, 404
        return _transaction_to_dict(transaction), 201

    # ── Performance ──────────────────────────────────────

    @app.route("/api/portfolios/<portfolio_id>/performance")
    def portfolio_performance(portfolio_id: str):
        try:
            start_date = _parse_query_date(request.args.get("start"))
            end_date = _parse_query_date(request.args.get("end"))
        except ValueError as e:
            return {"error": f"Invalid date: {e}"}, 400

        try:
            report = get_portfolio_performance(
                repository,
                pricing_manager,
                portfolio_id,
                start_date=start_date,
                end_date=end_date,
                oversell=settings.oversell,
                price_mode=settings.price_mode,
                max_workers=settings.max_workers,
                timeout=settings.timeout_seconds,
            )
        except OversellError as e:
            return {"error": str(e)}, 422
        except ReportCancelledError as e:
            return {"error": str(e)}, 503

        if report is None:
            return {"error": f"Portfolio {portfolio_id} not found"}, 404
        return report_to_dict(report)

    return app
