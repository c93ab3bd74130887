import math


def build_pagination(page: int, limit: int, total: int) -> dict:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page * limit < total,
        "hasPreviousPage": page > 1,
    }
