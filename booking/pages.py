from fastapi import APIRouter
from fastapi.responses import FileResponse

from booking.config import ERROR_PAGE, static_dir

router = APIRouter()


def page(name: str) -> FileResponse:
    path = static_dir() / name
    if not path.is_file():
        return FileResponse(ERROR_PAGE)
    return FileResponse(path)


@router.get("/", include_in_schema=False)
def index_page():
    return page("index.html")


@router.get("/lessons", include_in_schema=False)
def lessons_page():
    return page("lessons.html")


@router.get("/account-update/{customer_id}", include_in_schema=False)
def account_update_page(customer_id: str):
    return page("account-update.html")
