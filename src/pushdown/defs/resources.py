from pushdown.defs.settings import StoreResource, WorkflowSettings

resources = {
  "store": StoreResource(),
  "settings": WorkflowSettings(),
}
