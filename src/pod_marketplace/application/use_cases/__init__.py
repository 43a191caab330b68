from pod_marketplace.application.use_cases.create_product import CreateProduct
from pod_marketplace.application.use_cases.delete_product import DeleteProduct
from pod_marketplace.application.use_cases.list_products import ListProducts, ProductListing
from pod_marketplace.application.use_cases.register_user import RegisterUser
from pod_marketplace.application.use_cases.update_product import UpdateProduct

__all__ = [
    "CreateProduct",
    "DeleteProduct",
    "ListProducts",
    "ProductListing",
    "RegisterUser",
    "UpdateProduct",
]
