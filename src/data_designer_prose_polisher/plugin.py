from data_designer.plugins.plugin import Plugin, PluginType

prose_polisher_plugin = Plugin(
    config_qualified_name="data_designer_prose_polisher.config.ProsePolisherColumnConfig",
    impl_qualified_name="data_designer_prose_polisher.generator.ProsePolisherColumnGenerator",
    plugin_type=PluginType.COLUMN_GENERATOR,
)
