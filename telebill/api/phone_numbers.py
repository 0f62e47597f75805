from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import Schema, fields, validate

from telebill.services import get_rate_service
from telebill.utils.validators import validate_query_args

phone_numbers_bp = Blueprint('phone_numbers', __name__)


class AvailableNumbersQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    per_page = fields.Int(load_default=12, validate=validate.Range(min=1, max=100))
    country = fields.Str(load_default=None)
    number_type = fields.Str(load_default=None)
    search = fields.Str(load_default=None, validate=validate.Length(max=100))


@phone_numbers_bp.route('/available', methods=['GET'])
@jwt_required()
@validate_query_args(AvailableNumbersQuerySchema())
def list_available_numbers():
    """Numbers the current user can purchase, priced from their rate deck"""
    try:
        user_id = int(get_jwt_identity())
        args = request.validated_args
        result = get_rate_service().list_purchasable_numbers(
            user_id,
            page=args['page'],
            per_page=args['per_page'],
            country=args['country'],
            number_type=args['number_type'],
            search=args['search']
        )
        return jsonify({
            'success': True,
            **result
        }), 200

    except Exception as e:
        current_app.logger.error(f"List available numbers error: {str(e)}")
        return jsonify({
            'success': False,
            'error': 'Failed to fetch available phone numbers'
        }), 500
