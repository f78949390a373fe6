"""
FX Harvest

Drives a web image-generation tool through repeated prompt/generate cycles
and saves every unique image it produces.

Usage:
    from fxharvest.automation_controller import AutomationController
    from fxharvest.playwright_page import PlaywrightPage

    async with PlaywrightPage("https://labs.google/fx/tools/image-fx") as page:
        session = await AutomationController(page).run(count=10)
"""

__version__ = "1.0.0"
