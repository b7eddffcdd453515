"""Route classification."""

from stillspace.routing.classifier import RouteClass, RouteClassifier, RouteRule, default_rules

__all__ = ['RouteClass', 'RouteClassifier', 'RouteRule', 'default_rules']
