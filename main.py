from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from royalty_engine import BlueprintMaterializer, CalculationReportService, FeeCalculationService, FeeProcessor
from royalty_engine.exceptions import FeeExceedsSaleAmountError
from royalty_engine.models import SaleTransaction
from royalty_engine.output import (
    materialization_to_dict,
    report_to_dict,
    result_to_dict,
    summary_report_to_dict,
)
from royalty_engine.storage import create_tables, init_engine_from_url, session_scope
import os
import logging

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///royalty_engine.db")

app = Flask(__name__)

# Enable CORS for all routes
CORS(app)

# Initialize the stateless fee processor and the database
processor = FeeProcessor()
init_engine_from_url(DATABASE_URL)
create_tables()


# =============================================================================
# ERROR HANDLING
# =============================================================================

@app.errorhandler(FeeExceedsSaleAmountError)
def handle_fee_exceeds_sale(e):
    # Rule misconfiguration: surface which rule and sale to fix
    logger.error(f"Fee invariant violated: {str(e)}")
    return jsonify({
        "error": str(e),
        "status": "fee_exceeds_sale_amount",
        "rule_name": e.rule_name,
        "transaction_id": e.transaction_id,
    }), 422


@app.errorhandler(LookupError)
def handle_not_found(e):
    logger.warning(f"Not found: {str(e)}")
    return jsonify({
        "error": str(e),
        "status": "not_found"
    }), 404


@app.errorhandler(ValueError)
def handle_validation_error(e):
    # Validation errors from engine
    logger.error(f"Validation error: {str(e)}")
    return jsonify({
        "error": str(e),
        "status": "validation_failed"
    }), 400


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    # Log details but return generic message to avoid information disclosure
    logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
    return jsonify({
        "error": "An unexpected error occurred during processing",
        "status": "failed"
    }), 500


def _json_body() -> dict:
    input_data = request.get_json(force=True, silent=True)
    if not input_data:
        raise ValueError("No input data provided")
    if not isinstance(input_data, dict):
        raise ValueError("Request body must be a JSON object")
    return input_data


# =============================================================================
# ROUTES
# =============================================================================

@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Royalty Engine API",
        "version": "1.0",
        "environment": ENVIRONMENT,
        "endpoints": {
            "calculate_fees": "/calculate_fees [POST]",
            "calculate_contract": "/contracts/<contract_id>/calculate [POST]",
            "materialize": "/contracts/<contract_id>/materialize [POST]",
            "mappings_confirmed": "/contracts/<contract_id>/mappings_confirmed [POST]",
            "report": "/calculations/<calculation_id>/report?dimension=<key> [GET]",
            "summary": "/calculations/<calculation_id>/summary [GET]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy", "environment": ENVIRONMENT}), 200


@app.route("/calculate_fees", methods=["POST"])
def calculate_fees():
    """
    Price a self-contained batch: rules, blueprints and transactions all in
    the request body. Nothing is read from or written to the database.
    """
    input_data = _json_body()

    contract_id = input_data.get("contract_id", "Unknown")
    logger.info(f"Calculating fees for contract: {contract_id}")

    result = processor.process_from_dict(input_data)

    logger.info(f"Fees calculated for contract {contract_id}: final fee {result['final_fee']}")

    return jsonify(result), 200


@app.route("/contracts/<contract_id>/calculate", methods=["POST"])
def calculate_contract(contract_id):
    """Price sales against a stored contract and record the run."""
    input_data = _json_body()
    transactions = [SaleTransaction.from_dict(t) for t in input_data.get("transactions", [])]

    with session_scope() as session:
        service = FeeCalculationService(session)
        calculation_id, result = service.calculate_and_save(
            contract_id, transactions, name=input_data.get("name")
        )
        output = result_to_dict(result)

    output["calculation_id"] = calculation_id
    return jsonify(output), 200


@app.route("/contracts/<contract_id>/materialize", methods=["POST"])
def materialize_contract(contract_id):
    """Rebuild the contract's blueprints from its rules and confirmed mappings."""
    with session_scope() as session:
        summary = BlueprintMaterializer(session).materialize_for_contract(contract_id)
    return jsonify(materialization_to_dict(summary)), 200


@app.route("/contracts/<contract_id>/mappings_confirmed", methods=["POST"])
def mappings_confirmed(contract_id):
    """Hook for the mapping workflow: re-materialize after confirmations."""
    with session_scope() as session:
        summary = BlueprintMaterializer(session).on_mappings_confirmed(contract_id)
    return jsonify(materialization_to_dict(summary)), 200


@app.route("/calculations/<calculation_id>/report", methods=["GET"])
def calculation_report(calculation_id):
    dimension = request.args.get("dimension") or None
    with session_scope() as session:
        report = CalculationReportService(session).get_calculation_report(calculation_id, dimension)
        output = report_to_dict(report)
    return jsonify(output), 200


@app.route("/calculations/<calculation_id>/summary", methods=["GET"])
def calculation_summary(calculation_id):
    with session_scope() as session:
        output = summary_report_to_dict(CalculationReportService(session).get_summary_report(calculation_id))
    return jsonify(output), 200


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
