from typing import Dict, Optional

from bs4 import BeautifulSoup


def extract_html_metadata(text: str, content_type: Optional[str]) -> Dict[str, object]:
    """Title, description, named meta tags and a link count. Non-HTML gives {}."""
    metadata: Dict[str, object] = {}
    if not content_type or "text/html" not in content_type.lower():
        return metadata

    soup = BeautifulSoup(text, "html.parser")

    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        if title:
            metadata["title"] = title

    meta_tags: Dict[str, str] = {}
    for tag in soup.find_all("meta", attrs={"name": True, "content": True}):
        name = tag["name"].strip()
        content = tag["content"].strip()
        if name and content:
            meta_tags.setdefault(name.lower(), content)

    if "description" in meta_tags:
        metadata["description"] = meta_tags["description"]
    if meta_tags:
        metadata["metaTags"] = meta_tags

    link_count = len(soup.find_all("a", href=True))
    if link_count:
        metadata["linkCount"] = link_count

    return metadata
