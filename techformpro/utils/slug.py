import re
import unicodedata


def slugify(value):
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^\w\s-]", "", value.lower())
    return re.sub(r"[-\s_]+", "-", value).strip("-")


def unique_slug(value, exists):
    """slugify ``value`` and append -2, -3 ... until ``exists(slug)`` is False."""
    base = slugify(value) or "item"
    slug, counter = base, 2
    while exists(slug):
        slug = f"{base}-{counter}"
        counter += 1
    return slug
