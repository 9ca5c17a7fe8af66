"""Application entry point - Flask web server."""
import logging
import os

from flask import Flask, jsonify, request, session

from backend import Api

PUBLIC_METHODS = ('reset_password', 'geocode_address', 'get_options', 'get_repair_progress')


def create_app(api=None):
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # card photos travel as base64
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', os.urandom(24).hex())  # For sessions
    api = api or Api()
    app.extensions['tasca_api'] = api

    def _store(result):
        if result.get('success') and result.get('session'):
            session['tasca'] = result.pop('session')
        return result

    # Authentication routes
    @app.route('/api/register', methods=['POST'])
    async def register():
        """Register a new user."""
        data = request.get_json(silent=True) or {}
        result = await api.register(
            data.get('name', '').strip(),
            data.get('email', '').strip(),
            data.get('password') or None,
        )
        if result.get('pending'):
            result.pop('session', None)
        return jsonify(_store(result))

    @app.route('/api/login', methods=['POST'])
    async def login():
        """Login a user."""
        data = request.get_json(silent=True) or {}
        result = await api.login(data.get('email', '').strip(), data.get('password') or None)
        return jsonify(_store(result))

    @app.route('/api/logout', methods=['POST'])
    async def logout():
        """Logout current user."""
        result = await api.logout(session=session.get('tasca'))
        session.clear()
        return jsonify(result)

    @app.route('/api/current_user', methods=['GET'])
    async def current_user():
        """Get current logged-in user info."""
        if not session.get('tasca'):
            return jsonify({'success': True, 'logged_in': False})
        result = await api.current_user(session=session.get('tasca'))
        if not result.get('logged_in'):
            session.clear()
        return jsonify(result)

    @app.route('/')
    def index():
        return jsonify({'app': 'Gusto in Tasca', 'cloud': api.backend.cloud})

    # API routes - allow-listed Api methods as Flask endpoints
    @app.route('/api/<method_name>', methods=['GET', 'POST'])
    async def api_proxy(method_name):
        """Proxy API calls to the Api class methods."""
        if method_name not in Api.EXPOSED:
            return jsonify({'success': False, 'error': 'Method not found'}), 404

        stored = session.get('tasca')
        if not stored and method_name not in PUBLIC_METHODS:
            return jsonify({'success': False, 'error': 'Not logged in'}), 401

        # Get parameters from JSON body or query params
        if request.method == 'POST':
            params = request.get_json(silent=True) or {}
        else:
            params = request.args.to_dict()
        params.pop('session', None)

        method = getattr(api, method_name)
        try:
            result = await method(session=stored, **params)
        except TypeError as e:
            return jsonify({'success': False, 'error': f"Bad parameters: {e}"}), 400
        return jsonify(result)

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port, debug=True)
