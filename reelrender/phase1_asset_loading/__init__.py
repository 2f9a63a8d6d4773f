from reelrender.phase1_asset_loading.resolver import ResolvedAssets, resolve_assets

__all__ = ["ResolvedAssets", "resolve_assets"]
