# Overview: Flask API routes for categories, products and customers.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..models import Customer, Product
from ..services import catalog_service, customer_service
from ..validation import ModelValidationPolicy, parse_cents, parse_datetime, require_int, validate_payload


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "code", "category_id", "sale_type", "sale_price_cents", "cost_price_cents",
        "track_stock", "current_stock", "min_stock", "eligible_for_loyalty", "earns_cashback", "is_active",
    },
    required_on_create={"name"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "cpf", "phone"},
    required_on_create={"name"},
)


# =============================================================================
# CATEGORIES
# =============================================================================

@catalog_bp.post("/categories")
@require_auth
@require_role(*MANAGER_ROLES)
def create_category_route():
    """Body: {"name", "category_type": STANDARD|ASSEMBLED, "sizes": [{"name", "max_flavors"}]?}"""
    try:
        data = request.get_json() or {}
        category = catalog_service.create_category(
            (data.get("name") or "").strip(),
            data.get("category_type") or "STANDARD",
            data.get("sizes"),
            data.get("description"),
        )
        return jsonify({"category": category.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/categories/<int:category_id>/sizes")
@require_auth
@require_role(*MANAGER_ROLES)
def add_size_route(category_id: int):
    try:
        data = request.get_json() or {}
        size = catalog_service.add_category_size(
            category_id,
            data.get("name"),
            require_int(data.get("max_flavors", 1), "max_flavors", minimum=1),
        )
        return jsonify({"size": size.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add category size")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@catalog_bp.post("/products")
@require_auth
@require_role(*MANAGER_ROLES)
def create_product_route():
    try:
        data = validate_payload(
            model=Product,
            payload=request.get_json(),
            policy=PRODUCT_POLICY,
            partial=False,
            extra_fields={"size_prices"},
        )
        product = catalog_service.create_product(data)
        return jsonify({"product": product.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products")
@require_auth
def list_products_route():
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    products = catalog_service.list_products(active_only, request.args.get("category_id", type=int))
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@catalog_bp.get("/products/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@catalog_bp.put("/products/<int:product_id>/sizes/<int:size_id>")
@require_auth
@require_role(*MANAGER_ROLES)
def set_size_price_route(product_id: int, size_id: int):
    try:
        data = request.get_json() or {}
        entry = catalog_service.set_size_price(product_id, size_id, parse_cents(data.get("price_cents"), "price_cents"))
        return jsonify({"size_price": entry.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set size price")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/products/<int:product_id>/costs")
@require_auth
@require_role(*MANAGER_ROLES)
def add_cost_route(product_id: int):
    try:
        data = request.get_json() or {}
        cost = catalog_service.add_product_cost(
            product_id,
            parse_cents(data.get("cost_cents"), "cost_cents"),
            valid_from=parse_datetime(data.get("valid_from"), "valid_from"),
            notes=data.get("notes"),
        )
        return jsonify({"cost": cost.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add product cost")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/products/<int:product_id>/stock")
@require_auth
@require_role(*MANAGER_ROLES)
def adjust_stock_route(product_id: int):
    try:
        data = request.get_json() or {}
        if data.get("delta") is None:
            return jsonify({"error": "delta required"}), 400
        product = catalog_service.adjust_stock(product_id, data["delta"], data.get("reason"))
        return jsonify({"product": product.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/products/<int:product_id>/deactivate")
@require_auth
@require_role(*MANAGER_ROLES)
def deactivate_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.deactivate_product(product_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)


# =============================================================================
# CUSTOMERS
# =============================================================================

@catalog_bp.post("/customers")
@require_auth
def create_customer_route():
    try:
        data = validate_payload(model=Customer, payload=request.get_json(), policy=CUSTOMER_POLICY, partial=False)
        customer = customer_service.create_customer(data)
        return jsonify({"customer": customer.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/customers")
@require_auth
def search_customers_route():
    customers = customer_service.search_customers(request.args.get("q"), request.args.get("limit", 50, type=int))
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@catalog_bp.get("/customers/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return jsonify({"customer": customer_service.get_customer(customer_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)
