from typing import Tuple


def normalize_paging(page: int, page_size: int, max_page_size: int = 100) -> Tuple[int, int]:
    p = page if page and page > 0 else 1
    ps = page_size if page_size and page_size > 0 else 20
    ps = min(ps, max_page_size)
    return p, ps


def paginate(query, page: int, page_size: int) -> Tuple[list, int, int, int]:
    p, ps = normalize_paging(page, page_size)
    total = query.count()
    rows = query.offset((p - 1) * ps).limit(ps).all()
    return rows, total, p, ps
