"""
Tests for investor directory and firm website parsing.
"""

import httpx
import pytest

from collectors.investor_directory import (
    InvestorDirectoryClient,
    parse_firm_website,
    parse_member_directory,
    website_domain,
)

DIRECTORY_HTML = """
<div class="member-card">
  <h3>Northern Seed Ventures</h3>
  <a href="https://www.northernseed.co.uk/about">Visit</a>
</div>
<div class="member-card">
  <h3>XY</h3>
</div>
<div class="member-card">
  <h4>Quiet Capital</h4>
</div>
"""

FIRM_HTML = """
<html><body>
<a>Home</a><a>Portfolio</a>
<h2>Analytical Engines</h2>
<h3>Difference Labs</h3>
<strong>Jacquard AI</strong>
<h3>analytical engines</h3>
<p>We back pre-seed and Series A founders in fintech and climate.</p>
<p>Team: <a href="https://www.linkedin.com/in/jane-doe">profile</a>
<a href="https://linkedin.com/in/john-smith">profile</a></p>
<p>Latest investment announced March 2025. Founded 2012.</p>
</body></html>
"""


class TestParsing:

    def test_member_blocks(self):
        firms = parse_member_directory(DIRECTORY_HTML)
        assert [f.firm_name for f in firms] == ["Northern Seed Ventures", "Quiet Capital"]
        assert firms[0].website == "https://www.northernseed.co.uk/about"
        assert firms[1].website is None

    def test_name_pattern_fallback(self):
        firms = parse_member_directory("<p>Members include Acme Ventures and Blue Sky Partners.</p>")
        assert "Acme Ventures" in [f.firm_name for f in firms]

    def test_firm_website(self):
        site = parse_firm_website(FIRM_HTML)

        assert site.partner_names == ["jane doe", "john smith"]
        assert [c["name"] for c in site.portfolio_companies] == [
            "Analytical Engines", "Difference Labs", "Jacquard AI",
        ]
        assert "fintech" in site.sectors
        assert "climate" in site.sectors
        assert "pre-seed" in site.stages
        assert "series-a" in site.stages
        assert site.latest_year == 2025

    def test_empty_page(self):
        site = parse_firm_website("")
        assert site.portfolio_companies == []
        assert site.stages == []
        assert site.latest_year is None

    def test_website_domain(self):
        assert website_domain("https://www.northernseed.co.uk/about") == "northernseed.co.uk"
        assert website_domain("seedfund.vc") == "seedfund.vc"


class TestClient:

    @pytest.mark.asyncio
    async def test_list_and_scrape(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "directory.test":
                return httpx.Response(200, text=DIRECTORY_HTML)
            if request.url.host == "www.northernseed.co.uk":
                return httpx.Response(200, text=FIRM_HTML)
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            async with InvestorDirectoryClient("https://directory.test/members", client=http) as directory:
                firms = await directory.list_members()
                site = await directory.scrape_website(firms[0].website)

        assert len(firms) == 2
        assert len(site.portfolio_companies) == 3

    @pytest.mark.asyncio
    async def test_unreachable_site_yields_empty_profile(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            async with InvestorDirectoryClient(client=http) as directory:
                site = await directory.scrape_website("gone.example")

        assert site.portfolio_companies == []
