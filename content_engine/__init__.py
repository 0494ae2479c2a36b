"""
SEO Content Engine

Multi-provider article generation for WordPress sites. Turns a keyword or a
pillar/cluster plan into quality-gated HTML articles with images, internal
links, embedded videos and schema seeds, then publishes them over the
WordPress REST API.

Usage:
    from content_engine.config import load_config
    from content_engine.content_pipeline import ContentPipeline

    config = load_config()
    pipeline = ContentPipeline.from_config(config, existing_pages=pages)
    items = await pipeline.plan_cluster("home composting")
    await pipeline.generate_batch(items)
"""

__version__ = "1.0.0"
