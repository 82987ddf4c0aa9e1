# Overview: Flask API routes for read-only catalog browsing.

from flask import Blueprint, request, jsonify, current_app

from ..errors import StorefrontError
from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/products")


@catalog_bp.get("")
def list_products_route():
    """
    Query params:
    - category: exact category filter
    - q: name substring search
    - in_stock: "true" to hide sold-out products
    """
    try:
        products = catalog_service.list_products(
            category=request.args.get("category") or None,
            search=request.args.get("q") or None,
            in_stock_only=request.args.get("in_stock", "false").lower() == "true",
        )
        return jsonify({
            "products": [p.to_dict() for p in products],
            "categories": catalog_service.list_categories(),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.require_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500
