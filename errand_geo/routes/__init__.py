"""Routes package for the geo engine service."""


def register_routes(app):
    """Register all route blueprints with the application."""
    from .pricing import pricing_bp
    from .bundles import bundles_bp
    from .tracking import tracking_bp

    app.register_blueprint(pricing_bp, url_prefix='/api/pricing')
    app.register_blueprint(bundles_bp, url_prefix='/api/bundles')
    app.register_blueprint(tracking_bp, url_prefix='/api/tracking')
