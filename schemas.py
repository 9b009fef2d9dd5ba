"""
Database Schemas for Maison Slimani

Each Pydantic model represents a MongoDB collection (lowercase class name) or
a request payload validated at the API boundary.
"""
from typing import Annotated, Optional, List, Literal, Dict, Any
from uuid import UUID
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, EmailStr, HttpUrl

OrderStatus = Literal["En attente", "Expédiée", "Livrée", "Annulée"]

STATUS_PENDING = "En attente"
STATUS_SHIPPED = "Expédiée"
STATUS_DELIVERED = "Livrée"
STATUS_CANCELLED = "Annulée"


def _blank_to_none(value):
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


# Admins collection
class Admin(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., min_length=10)


# Products collection
class SizeStock(BaseModel):
    nom: str = Field(..., min_length=1, max_length=50)
    stock: int = Field(0, ge=0)


class Product(BaseModel):
    nom: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    prix: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    categorie: str = Field(..., min_length=1, max_length=100)
    vedette: bool = False
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tailles: List[SizeStock] = Field(default_factory=list)
    average_rating: float = 0
    rating_count: int = 0


class ProductUpdate(BaseModel):
    nom: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    prix: Optional[float] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    categorie: Optional[str] = Field(None, min_length=1, max_length=100)
    vedette: Optional[bool] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    tailles: Optional[List[SizeStock]] = None


class Category(BaseModel):
    nom: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None


# Orders collection
class OrderItem(BaseModel):
    id: UUID
    nom: str
    prix: float = Field(..., gt=0)
    quantite: int = Field(..., gt=0)
    image_url: Optional[str] = None
    taille: Optional[str] = None
    couleur: Optional[str] = None


class OrderCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nom_client: str = Field(..., min_length=1)
    telephone: str = Field(..., min_length=1)
    email: OptionalEmail = None
    adresse: str = Field(..., min_length=1)
    ville: str = Field(..., min_length=1)
    produits: List[OrderItem] = Field(..., min_length=1)


class Order(BaseModel):
    nom_client: str
    telephone: str
    email: Optional[str] = None
    adresse: str
    ville: str
    produits: List[Dict[str, Any]]
    total: float = Field(..., ge=0)
    statut: OrderStatus = STATUS_PENDING


class StatusUpdate(BaseModel):
    nouveau_statut: OrderStatus


# Comments collection
class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    produit_id: UUID
    nom: str = Field(..., min_length=1, max_length=100)
    email: OptionalEmail = None
    rating: int = Field(..., ge=1, le=5)
    commentaire: str = Field(..., min_length=1, max_length=2000)
    images: List[HttpUrl] = Field(default_factory=list, max_length=6)


class CommentUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    nom: Optional[str] = Field(None, min_length=1, max_length=100)
    email: OptionalEmail = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    commentaire: Optional[str] = Field(None, min_length=1, max_length=2000)
    images: Optional[List[HttpUrl]] = Field(None, max_length=6)


class CommentModeration(CommentUpdate):
    approved: Optional[bool] = None
    flagged: Optional[bool] = None


class Comment(BaseModel):
    produit_id: str
    nom: str
    email: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    commentaire: str
    images: List[str] = Field(default_factory=list)
    session_token: str
    approved: bool = True
    flagged: bool = False


# Push subscriptions collection
class PushSubscriptionPayload(BaseModel):
    userId: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1)
    subscription: Dict[str, Any]


class PushSubscriptionKey(BaseModel):
    userId: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1)


class PushSendPayload(BaseModel):
    userIds: Optional[List[str]] = None
    target: Optional[Literal["all"]] = None
    title: str = Field(..., min_length=1)
    body: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    icon: Optional[str] = None
    badge: Optional[str] = None


# Shop settings (single document)
class Settings(BaseModel):
    email_entreprise: OptionalEmail = None
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    description: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
