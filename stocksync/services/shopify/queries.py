"""
GraphQL documents used against the Shopify Admin API.
"""

LOCATIONS_QUERY = """
query GetLocations($first: Int = 50) {
  locations(first: $first) {
    edges {
      node {
        id
        name
        isActive
      }
    }
  }
}
"""

PRODUCT_VARIANTS_BY_SKU_QUERY = """
query GetProductVariantsBySku($query: String!) {
  productVariants(first: 10, query: $query) {
    edges {
      node {
        id
        sku
        title
        inventoryQuantity
        inventoryPolicy
        inventoryItem {
          id
          tracked
        }
        product {
          id
          title
        }
      }
    }
  }
}
"""

INVENTORY_LEVELS_QUERY = """
query GetInventoryLevels($inventoryItemId: ID!, $first: Int = 50) {
  inventoryItem(id: $inventoryItemId) {
    id
    sku
    tracked
    inventoryLevels(first: $first) {
      edges {
        node {
          id
          quantities(names: ["available", "committed", "incoming"]) {
            name
            quantity
          }
          location {
            id
            name
          }
        }
      }
    }
  }
}
"""

INVENTORY_ITEM_SKU_QUERY = """
query GetInventoryItemSku($id: ID!) {
  inventoryItem(id: $id) {
    id
    sku
    tracked
  }
}
"""

INVENTORY_SET_QUANTITIES_MUTATION = """
mutation InventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup {
      id
      reason
      changes {
        name
        delta
        quantityAfterChange
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCTS_QUERY = """
query GetProducts($first: Int = 25, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id
        title
        variants(first: 100) {
          edges {
            node {
              id
              sku
              title
              inventoryQuantity
              inventoryPolicy
              inventoryItem {
                id
                tracked
                inventoryLevels(first: 10) {
                  edges {
                    node {
                      quantities(names: ["available", "committed", "incoming"]) {
                        name
                        quantity
                      }
                      location {
                        id
                        name
                      }
                    }
                  }
                }
              }
            }
          }
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""
