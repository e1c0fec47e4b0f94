"""
Database models for the sports-nutrition catalog and recommendation history
"""
import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class FeedbackSentiment(enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class ProductCategory(Base):
    """Catalog categories (recovery, energy, hydration, ...)"""

    __tablename__ = "product_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)

    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<ProductCategory(id={self.id}, name='{self.name}')>"


class ProductType(Base):
    """Product format (bar, gel, powder, capsule, drink)"""

    __tablename__ = "product_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)

    products = relationship("Product", back_populates="product_type")

    def __repr__(self):
        return f"<ProductType(id={self.id}, name='{self.name}')>"


class Product(Base):
    """Sports-nutrition product"""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    brand = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    usage_recommendation = Column(Text, nullable=True)
    usage_context = Column(String(255), nullable=True)
    serving_size = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, index=True)

    category_id = Column(Integer, ForeignKey("product_categories.id"), nullable=True, index=True)
    type_id = Column(Integer, ForeignKey("product_types.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("ProductCategory", back_populates="products")
    product_type = relationship("ProductType", back_populates="products")
    nutrition = relationship("ProductNutrition", back_populates="product", uselist=False, cascade="all, delete-orphan")
    attributes = relationship("ProductAttribute", back_populates="product", cascade="all, delete-orphan")
    embedding = relationship("ProductEmbedding", back_populates="product", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name[:50]}', active={self.is_active})>"


class ProductAttribute(Base):
    """Product tags (vegan, gluten-free, high-protein, ...); spelling is canonicalised on read"""

    __tablename__ = "product_attributes"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    attribute_name = Column(String(100), nullable=False, index=True)

    product = relationship("Product", back_populates="attributes")

    __table_args__ = (
        UniqueConstraint("product_id", "attribute_name", name="uq_product_attribute"),
        Index("idx_attribute_product_name", "product_id", "attribute_name"),
    )

    def __repr__(self):
        return f"<ProductAttribute(product_id={self.product_id}, name='{self.attribute_name}')>"


class ProductNutrition(Base):
    """Per-serving nutrition facts"""

    __tablename__ = "product_nutrition"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, nullable=False, index=True)
    energy_kcal = Column(Float, nullable=True)
    protein_g = Column(Float, nullable=True)
    carbs_g = Column(Float, nullable=True)
    sugars_g = Column(Float, nullable=True)
    sodium_mg = Column(Float, nullable=True)
    caffeine_mg = Column(Float, nullable=True)

    product = relationship("Product", back_populates="nutrition")

    def __repr__(self):
        return f"<ProductNutrition(product_id={self.product_id}, kcal={self.energy_kcal}, caffeine={self.caffeine_mg})>"


class ProductEmbedding(Base):
    """Stored product embedding (JSON-encoded float list), one per product"""

    __tablename__ = "product_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, nullable=False, index=True)
    embedding = Column(Text, nullable=False)
    embedding_text = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="embedding")

    def __repr__(self):
        return f"<ProductEmbedding(product_id={self.product_id}, updated_at={self.updated_at})>"


class UserProfileRecord(Base):
    """Stored physiological profile; enum-ish columns keep the raw vocabulary"""

    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, nullable=False, index=True)
    age = Column(Integer, nullable=True)
    weight = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    gender = Column(String(30), nullable=True)
    activity_level = Column(String(30), nullable=True)
    training_frequency = Column(String(30), nullable=True)
    primary_goal = Column(String(50), nullable=True)
    sweat_level = Column(String(20), nullable=True)
    caffeine_tolerance = Column(String(20), nullable=True)
    dietary_restrictions = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "age": self.age,
            "weight": self.weight,
            "height": self.height,
            "gender": self.gender,
            "activity_level": self.activity_level,
            "training_frequency": self.training_frequency,
            "primary_goal": self.primary_goal,
            "sweat_level": self.sweat_level,
            "caffeine_tolerance": self.caffeine_tolerance,
            "dietary_restrictions": self.dietary_restrictions,
        }

    def __repr__(self):
        return f"<UserProfileRecord(user_id={self.user_id}, goal='{self.primary_goal}')>"


class TrainingSession(Base):
    """A planned or logged training session"""

    __tablename__ = "training_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    session_type = Column(String(100), nullable=True)
    intensity = Column(String(50), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    weather = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    session_date = Column(DateTime, default=datetime.utcnow)

    recommendations = relationship("Recommendation", back_populates="session")

    def to_training_data(self) -> dict:
        return {
            "type": self.session_type,
            "intensity": self.intensity,
            "duration_minutes": self.duration_minutes,
            "weather": self.weather,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<TrainingSession(id={self.id}, user_id={self.user_id}, type='{self.session_type}')>"


class Recommendation(Base):
    """A recommended product, one row per item"""

    __tablename__ = "recommendations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("training_sessions.id"), nullable=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    recommended_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    consumption_timing = Column(String(20), nullable=True)
    timing_minutes = Column(Integer, nullable=True)
    quantity = Column(String(100), nullable=True)
    instructions = Column(Text, nullable=True)
    reasoning = Column(String(250), nullable=True)
    overall_reasoning = Column(String(255), nullable=True)
    source = Column(String(20), default="llm")
    feedback = Column(String(10), nullable=True)
    feedback_notes = Column(Text, nullable=True)

    session = relationship("TrainingSession", back_populates="recommendations")
    product = relationship("Product")

    __table_args__ = (
        Index("idx_recommendation_user_date", "user_id", "recommended_at"),
    )

    def __repr__(self):
        return f"<Recommendation(id={self.id}, user_id={self.user_id}, product_id={self.product_id})>"


class UserProductFeedback(Base):
    """Latest sentiment a user expressed about a product"""

    __tablename__ = "user_product_feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    sentiment = Column(String(10), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_user_product_feedback"),
    )

    def __repr__(self):
        return f"<UserProductFeedback(user_id={self.user_id}, product_id={self.product_id}, sentiment='{self.sentiment}')>"
