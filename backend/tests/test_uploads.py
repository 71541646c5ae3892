import pytest
from starlette.datastructures import FormData

from desci.core.exceptions import InvalidFileTypeError
from desci.services.uploads import content_type_for, form_list, validate_upload_type


@pytest.mark.parametrize(
    "filename,media_type",
    [
        ("a.pdf", "application/pdf"),
        ("a.md", "text/x-markdown"),
        ("a.csv", "text/csv; charset=utf-8"),
        ("A.ZIP", "application/x-zip-compressed"),
    ],
)
def test_allowed_types(filename, media_type):
    validate_upload_type(filename, media_type)


@pytest.mark.parametrize(
    "filename,media_type",
    [
        ("a.exe", "application/octet-stream"),
        ("a.pdf", "application/octet-stream"),
        ("a.exe", "application/pdf"),
        (None, None),
    ],
)
def test_rejected_types(filename, media_type):
    with pytest.raises(InvalidFileTypeError):
        validate_upload_type(filename, media_type)


def test_content_type_for():
    assert content_type_for("paper.PDF") == "application/pdf"
    assert content_type_for("paper.bin") == "application/octet-stream"


def test_form_list_variants():
    assert form_list(FormData([("authors", "A, B")]), "authors") == ["A", "B"]
    assert form_list(FormData([("authors[]", "Doe, J."), ("authors[]", "Roe, K.")]), "authors") == [
        "Doe, J.",
        "Roe, K.",
    ]
    assert form_list(FormData([("title", "x")]), "authors") is None
