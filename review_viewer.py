#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
review_viewer.py - filterable web view over the scraped review JSON

    uvicorn review_viewer:app --port 8000
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse

from review_catalog import filter_reviews, get_rating_badge, load_filter_options, load_reviews_data
from ukulele_reviews import Constants

DATA_DIR = Path(os.getenv("UKULELE_DATA_DIR", Constants.DEFAULT_OUTPUT_DIR))

INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Ukulele Reviews</title>
    <style>
        body {
            background: #faf7f2;
            color: #2b2b2b;
            font-family: Helvetica, Arial, sans-serif;
            margin: 0;
            padding: 20px;
        }
        .header {
            border-bottom: 2px solid #c8893b;
            padding-bottom: 10px;
            margin-bottom: 20px;
        }
        h1 {
            margin: 0;
            font-size: 24px;
        }
        .filters {
            display: flex;
            gap: 10px;
            margin-bottom: 20px;
        }
        .filters input, .filters select {
            padding: 6px;
            font-size: 14px;
        }
        #review-list {
            display: grid;
            grid-template-columns: repeat(auto-fill, minmax(260px, 1fr));
            gap: 12px;
        }
        .card {
            background: #fff;
            border: 1px solid #e0d6c8;
            border-radius: 5px;
            padding: 12px;
        }
        .card a {
            color: #2b2b2b;
            font-weight: bold;
            text-decoration: none;
        }
        .meta {
            color: #777;
            font-size: 13px;
            margin-top: 6px;
        }
        .badge-top-rated {
            background: #c8893b;
            color: #fff;
            padding: 2px 6px;
            border-radius: 3px;
            font-size: 12px;
        }
        .badge-recommended {
            background: #5b8c5a;
            color: #fff;
            padding: 2px 6px;
            border-radius: 3px;
            font-size: 12px;
        }
    </style>
</head>
<body>
    <div class="header">
        <h1>Ukulele Reviews</h1>
        <div class="meta" id="summary"></div>
    </div>
    <div class="filters">
        <input id="search" type="text" placeholder="Search brand or model">
        <select id="brand"><option value="">All brands</option></select>
        <select id="size"><option value="">All sizes</option></select>
        <select id="priceRange"><option value="">All prices</option></select>
    </div>
    <div id="review-list"></div>

    <script>
        const fields = ['search', 'brand', 'size', 'priceRange'];

        function fillSelect(id, values, lower) {
            const select = document.getElementById(id);
            values.forEach(function(value) {
                const option = document.createElement('option');
                option.value = lower ? value.toLowerCase() : value;
                option.textContent = value;
                select.appendChild(option);
            });
        }

        function renderCard(review) {
            const card = document.createElement('div');
            card.className = 'card';

            const link = document.createElement('a');
            link.href = review.url;
            link.target = '_blank';
            link.textContent = review.brand + ' ' + review.model;
            card.appendChild(link);

            const meta = document.createElement('div');
            meta.className = 'meta';
            meta.textContent = [review.size, review.priceRange, review.rating !== null ? review.rating + '/10' : '', review.reviewDate || '']
                .filter(Boolean).join(' · ');
            card.appendChild(meta);

            if (review.badge && review.badge.text) {
                const badge = document.createElement('span');
                badge.className = review.badge['class'];
                badge.textContent = review.badge.text;
                card.appendChild(badge);
            }
            return card;
        }

        async function refresh() {
            const params = new URLSearchParams();
            fields.forEach(function(id) {
                const value = document.getElementById(id).value;
                if (value) params.set(id, value);
            });

            const list = document.getElementById('review-list');
            list.innerHTML = '';
            try {
                const response = await fetch('/api/reviews?' + params.toString());
                if (!response.ok) throw new Error('HTTP error! status: ' + response.status);
                const data = await response.json();
                data.reviews.forEach(function(review) { list.appendChild(renderCard(review)); });
                document.getElementById('summary').textContent = data.total + ' reviews';
            } catch (error) {
                console.error('Failed to load reviews:', error);
                document.getElementById('summary').textContent = '0 reviews';
            }
        }

        async function init() {
            try {
                const response = await fetch('/api/filters');
                if (!response.ok) throw new Error('HTTP error! status: ' + response.status);
                const options = await response.json();
                fillSelect('brand', options.brands, false);
                fillSelect('size', options.sizes, true);
                fillSelect('priceRange', options.priceRanges, false);
            } catch (error) {
                console.error('Failed to load filter options:', error);
            }
            fields.forEach(function(id) {
                document.getElementById(id).addEventListener(id === 'search' ? 'input' : 'change', refresh);
            });
            refresh();
        }

        init();
    </script>
</body>
</html>
"""


def create_app(data_dir: Path = DATA_DIR) -> FastAPI:
    data_dir = Path(data_dir)
    reviews_path = data_dir / Constants.REVIEWS_FILE
    metadata_path = data_dir / Constants.METADATA_FILE
    served_files = {Constants.REVIEWS_FILE: reviews_path, Constants.METADATA_FILE: metadata_path}

    app = FastAPI(title="Ukulele Reviews")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return HTMLResponse(content=INDEX_HTML)

    @app.get("/data/{filename}")
    async def data_file(filename: str):
        path = served_files.get(filename)
        if path is None or not path.exists():
            raise HTTPException(status_code=404, detail=f"{filename} not found")
        return FileResponse(path, media_type="application/json")

    @app.get("/api/reviews")
    async def reviews(
        search: str = "",
        brand: str = "",
        size: str = "",
        price_range: str = Query("", alias="priceRange"),
    ) -> Dict[str, Any]:
        all_reviews, metadata = load_reviews_data(reviews_path)
        filtered = filter_reviews(all_reviews, search=search, brand=brand, size=size, price_range=price_range)
        return {
            "total": len(filtered),
            "scrapedAt": metadata.get("scrapedAt"),
            "reviews": [
                {**review, "badge": get_rating_badge(review.get("rating")).to_dict()}
                for review in filtered
            ],
        }

    @app.get("/api/filters")
    async def filters() -> Dict[str, Any]:
        return load_filter_options(metadata_path).to_dict()

    @app.get("/health")
    async def health():
        return {"status": "ok", "data_dir": str(data_dir)}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("VIEWER_HOST", "0.0.0.0"), port=int(os.getenv("VIEWER_PORT", "8000")))
