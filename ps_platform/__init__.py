# ps_platform: configuration, catalog, mapping and the sync core.
