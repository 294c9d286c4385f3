# backend/models/__init__.py
# Importing the package registers every table on Base.metadata
from models.users import User
from models.menu import MenuItem, ItemSize
from models.cart import Cart, CartItem
from models.order import Order, OrderItem, OrderStatus, PaymentMethod, DeliveryMethod
from models.custom_cake import CustomCakeOrder, ImageBasedOrder, CakeStatus
from models.payment import PaymentIntent, IntentPurpose, IntentTarget, IntentStatus
from models.stock import StockMovement, MovementType
from models.log import AuditLog
