"""
Database module for the recommendation service
"""
from .models import (
    Base,
    FeedbackSentiment,
    Product,
    ProductAttribute,
    ProductCategory,
    ProductEmbedding,
    ProductNutrition,
    ProductType,
    Recommendation,
    TrainingSession,
    UserProductFeedback,
    UserProfileRecord,
)

__all__ = [
    "Base",
    "FeedbackSentiment",
    "Product",
    "ProductAttribute",
    "ProductCategory",
    "ProductEmbedding",
    "ProductNutrition",
    "ProductType",
    "Recommendation",
    "TrainingSession",
    "UserProductFeedback",
    "UserProfileRecord",
]
